"""
Real-time session broadcaster for SpeakUp presentation clients.

Pushes live snapshots, scores, drill results and unlocks via Unix socket:
- Multiple concurrent client connections
- Late joiners receive the current session's start event and latest snapshot
- JSON event protocol with newline delimiters
- Thread-safe client management
"""

import json
import os
import socket
import threading
import time
from typing import List, Optional

from .models import Achievement, DrillResult, LiveSnapshot, SpeechScore


class SessionBroadcaster:
    """
    Broadcast session events to connected UI clients.

    Event Protocol (newline-delimited JSON):
    - session_start: Session started (resets client state)
    - snapshot: Latest LiveSnapshot
    - session_end: Session stopped or cancelled
    - score: SpeechScore for a completed session
    - drill_result: DrillResult for a completed drill
    - achievement_unlocked: Newly unlocked achievement
    - state_change: Controller state changed
    """

    def __init__(self, socket_path='/tmp/speakup_session.sock'):
        """
        Initialize broadcaster.

        Args:
            socket_path: Unix socket path for client connections
        """
        self.socket_path = socket_path
        self.clients: List[socket.socket] = []
        self.clients_lock = threading.Lock()
        self.server_socket: Optional[socket.socket] = None
        self.running = False
        self.accept_thread: Optional[threading.Thread] = None

        # Replayed to late joiners, RAM only
        self._session_event: Optional[dict] = None
        self._last_snapshot: Optional[dict] = None

    def start(self):
        """Start broadcaster server thread."""
        if os.path.exists(self.socket_path):
            os.remove(self.socket_path)

        self.server_socket = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self.server_socket.bind(self.socket_path)
        self.server_socket.listen(5)
        os.chmod(self.socket_path, 0o666)

        self.running = True
        self.accept_thread = threading.Thread(target=self._accept_clients, daemon=True)
        self.accept_thread.start()

        print(f"  ✓ Session broadcast active at {self.socket_path}", flush=True)

    def start_session(self, session_id: int, mode: str = "recording"):
        """
        Announce a new session and reset replay state.

        Args:
            session_id: Controller-local session number
            mode: "recording" or a drill mode value
        """
        self._last_snapshot = None
        self._session_event = {
            'type': 'session_start',
            'session_id': session_id,
            'mode': mode,
            'timestamp': time.time()
        }
        self._send(self._session_event)

    def end_session(self, session_id: int, cancelled: bool = False):
        self._session_event = None
        self.broadcast('session_end', {
            'session_id': session_id,
            'cancelled': cancelled,
            'timestamp': time.time()
        })

    def update_snapshot(self, snapshot: LiveSnapshot):
        """Broadcast the latest live metrics."""
        event = {'type': 'snapshot', **snapshot.to_dict()}
        self._last_snapshot = event
        self._send(event)

    def broadcast_score(self, score: SpeechScore, record_id: Optional[int] = None):
        self.broadcast('score', {'record_id': record_id, **score.to_dict()})

    def broadcast_drill_result(self, result: DrillResult):
        self.broadcast('drill_result', result.to_dict())

    def broadcast_achievement(self, achievement: Achievement):
        self.broadcast('achievement_unlocked', {
            'id': achievement.achievement_id,
            'title': achievement.title,
            'description': achievement.description,
            'icon': achievement.icon,
            'unlocked_date': achievement.unlocked_date.timestamp() if achievement.unlocked_date else None,
        })

    def broadcast_state_change(self, state: str):
        """
        Broadcast controller state change.

        Args:
            state: New state (idle/recording/processing/complete/cancelled/error)
        """
        self.broadcast('state_change', {
            'state': state,
            'timestamp': time.time()
        })

    def broadcast(self, event_type: str, data: dict):
        """
        Broadcast event to all connected clients.

        Args:
            event_type: Event type (session_start, snapshot, etc.)
            data: Event data dictionary
        """
        self._send({'type': event_type, **data})

    def _send(self, event: dict):
        message = (json.dumps(event) + '\n').encode('utf-8')

        with self.clients_lock:
            dead_clients = []
            for client in self.clients:
                try:
                    client.sendall(message)
                except (BrokenPipeError, ConnectionResetError, OSError):
                    dead_clients.append(client)

            # Remove disconnected clients
            for client in dead_clients:
                self.clients.remove(client)
                try:
                    client.close()
                except OSError:
                    pass

    def _accept_clients(self):
        """Accept client connections in background thread."""
        while self.running:
            try:
                self.server_socket.settimeout(1.0)
                client, _ = self.server_socket.accept()

                # Bring the new client up to date with the active session
                for event in (self._session_event, self._last_snapshot):
                    if event:
                        try:
                            client.sendall((json.dumps(event) + '\n').encode('utf-8'))
                        except OSError:
                            pass

                with self.clients_lock:
                    self.clients.append(client)
                print(f"  ✓ Session client connected (total: {len(self.clients)})", flush=True)

            except socket.timeout:
                continue
            except OSError as e:
                if self.running:
                    print(f"  ⚠️  Client accept error: {e}", flush=True)

    def stop(self):
        """Stop broadcaster and cleanup."""
        self.running = False

        with self.clients_lock:
            for client in self.clients:
                try:
                    client.close()
                except OSError:
                    pass
            self.clients = []

        if self.server_socket:
            try:
                self.server_socket.close()
            except OSError:
                pass

        if os.path.exists(self.socket_path):
            try:
                os.remove(self.socket_path)
            except OSError:
                pass

        if self.accept_thread and self.accept_thread.is_alive():
            self.accept_thread.join(timeout=2.0)
