"""Realtime voice visit: WebRTC greeting sessions with a live, speaker-labelled transcript."""

__version__ = "0.1.0"

__all__ = [
	'config',
	'errors',
	'client',
	'api_server',
	'main',
	'realtime',
]
