"""Interactive console client for a realtime voice visit."""

from __future__ import annotations

import asyncio
import getpass
import io
import logging
import sys
from pathlib import Path
from typing import Optional

from PIL import Image

from .client import create_realtime_session, login
from .config import Config
from .errors import VoiceVisitError
from .realtime import GreetingSession, elapsed_since_start, start_realtime_greeting
from .realtime.timeline import TimelineSnapshot

LOGGER = logging.getLogger(__name__)

HELP_TEXT = (
	'Commands: <text> send a message | /mic on|off | /image <path> | /doc <path> | /timeline | /quit'
)


def setup_logging() -> None:
	log_format = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'
	logging.basicConfig(level=logging.INFO, format=log_format)
	logging.getLogger('voicevisit').setLevel(logging.DEBUG)
	logging.getLogger('aioice').setLevel(logging.WARNING)
	logging.getLogger('aiortc').setLevel(logging.WARNING)
	logging.getLogger('asyncio').setLevel(logging.WARNING)


def load_image_as_jpeg(path: Path, quality: int = 85) -> bytes:
	"""Read any image Pillow understands and re-encode it as JPEG."""
	with Image.open(path) as img:
		if img.mode != 'RGB':
			img = img.convert('RGB')
		buffer = io.BytesIO()
		img.save(buffer, format='JPEG', quality=quality)
	return buffer.getvalue()


def load_document_text(path: Path) -> str:
	return path.read_text(encoding='utf-8', errors='replace').strip()


def format_timeline(timeline: TimelineSnapshot) -> str:
	labels = {
		'offerCreated': 'Offer Created',
		'answerReceived': 'Answer Received',
		'audioStarted': 'Audio Started',
		'firstTranscript': 'Text First Byte',
	}
	lines = []
	for milestone, seconds in elapsed_since_start(timeline).items():
		value = '--' if seconds is None else f'{seconds:.2f}s'
		lines.append(f'  {labels[milestone.value]}: {value}')
	return '\n'.join(lines)


class ConsoleVisit:
	"""Bridges a :class:`GreetingSession` to stdin/stdout."""

	def __init__(self) -> None:
		self.session: Optional[GreetingSession] = None
		self.interrupted = asyncio.Event()
		self._last_transcript = ''

	def on_transcript(self, text: str) -> None:
		new_part = text[len(self._last_transcript):] if text.startswith(self._last_transcript) else '\n' + text
		self._last_transcript = text
		if new_part.strip():
			print(new_part, end='', flush=True)

	def on_status(self, message: str) -> None:
		LOGGER.info('Status: %s', message)

	def on_error(self, error: Exception) -> None:
		LOGGER.error('Session interrupted: %s', error)
		self.interrupted.set()

	def on_microphone_state_change(self, enabled: bool) -> None:
		LOGGER.info('Microphone %s', 'live' if enabled else 'muted')

	async def start(self, access_token: str) -> GreetingSession:
		details = await create_realtime_session(access_token)
		self.session = await start_realtime_greeting(
			details,
			on_transcript=self.on_transcript,
			on_status=self.on_status,
			on_error=self.on_error,
			on_microphone_state_change=self.on_microphone_state_change,
		)
		if details.settings.requireManualMicEnable:
			LOGGER.info("Assistant connected. Type '/mic on' when you're ready to speak.")
		else:
			LOGGER.info('Assistant connected. Your microphone will turn on after the greeting.')
		return self.session

	async def handle_command(self, command: str) -> bool:
		"""Run one console command. Returns False when the visit should end."""
		session = self.session
		if session is None:
			return False
		if command in {'/quit', '/exit', 'exit', 'quit'}:
			return False
		if command == '/help':
			LOGGER.info(HELP_TEXT)
		elif command in {'/mic on', '/mic off'}:
			session.set_microphone_enabled(command == '/mic on')
		elif command.startswith('/image '):
			path = Path(command[len('/image '):].strip()).expanduser()
			try:
				image = await asyncio.to_thread(load_image_as_jpeg, path)
			except OSError as error:
				LOGGER.error('Cannot read image %s: %s', path, error)
				return True
			if not session.send_image(image):
				LOGGER.warning('Image not sent: realtime channel is not open')
		elif command.startswith('/doc '):
			path = Path(command[len('/doc '):].strip()).expanduser()
			try:
				text = await asyncio.to_thread(load_document_text, path)
			except OSError as error:
				LOGGER.error('Cannot read document %s: %s', path, error)
				return True
			if not session.send_text(text):
				LOGGER.warning('Document not sent: realtime channel is not open or document empty')
		elif command == '/timeline':
			print(format_timeline(session.timeline))
		elif command.startswith('/'):
			LOGGER.info(HELP_TEXT)
		elif not session.send_text(command):
			LOGGER.warning('Message not sent: realtime channel is not open')
		return True

	async def close(self) -> None:
		if self.session is not None:
			self.session.set_microphone_enabled(False)
			await self.session.close()
			self.session = None


async def interactive_loop(visit: ConsoleVisit) -> None:
	LOGGER.info(HELP_TEXT)
	while not visit.interrupted.is_set():
		prompt = asyncio.ensure_future(asyncio.to_thread(input, ''))
		interrupted = asyncio.ensure_future(visit.interrupted.wait())
		done, _ = await asyncio.wait({prompt, interrupted}, return_when=asyncio.FIRST_COMPLETED)
		interrupted.cancel()
		if prompt not in done:
			LOGGER.info('Session interrupted. Press Enter to exit.')
			break
		try:
			command = prompt.result().strip()
		except (EOFError, KeyboardInterrupt):
			break
		if command and not await visit.handle_command(command):
			break


async def main() -> None:
	setup_logging()
	Config.log_config()
	if not Config.validate_client():
		sys.exit(1)

	username = input('Email: ').strip()
	password = getpass.getpass('Password: ')
	dob = input('Date of birth (YYYY-MM-DD): ').strip()

	visit = ConsoleVisit()
	try:
		credentials = await login(username, password, dob)
		LOGGER.info('Authenticated as %s', credentials.user.username)
		await visit.start(credentials.accessToken)
		await interactive_loop(visit)
	except VoiceVisitError as error:
		LOGGER.error('%s', error)
	finally:
		await visit.close()
		LOGGER.info('Session closed.')


if __name__ == '__main__':
	asyncio.run(main())
