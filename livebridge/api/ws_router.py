"""WebSocket routes for live session updates."""
from fastapi import APIRouter, WebSocket, status

from ..errors import SessionNotFound
from ..streaming.websocket import handle_session_stream

router = APIRouter(tags=["websocket"])


@router.websocket("/ws/sessions/{session_id}")
async def session_stream(websocket: WebSocket, session_id: str):
    """
    WebSocket endpoint for one session's live updates.

    The first message is a ``snapshot``; after that the server pushes
    ``status``, ``events``, ``selection`` and ``profile`` messages, plus a
    ``ping`` every 30 seconds.

    Example client (JavaScript):
    ```javascript
    const ws = new WebSocket(`ws://localhost:8080/ws/sessions/${sessionId}`);
    ws.onmessage = (event) => {
        const data = JSON.parse(event.data);
        if (data.type === 'ping') {
            ws.send('pong');
        }
    };
    ws.send(JSON.stringify({action: 'select', messageId: 'm1'}));
    ```
    """
    state = websocket.app.state
    try:
        session = state.sessions.get(session_id)
    except SessionNotFound:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await handle_session_stream(websocket, session, state.streams)
