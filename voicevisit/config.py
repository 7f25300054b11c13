"""Configuration management for the voice visit server and client."""

from __future__ import annotations

import logging
import os
from typing import Optional, Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()


def _parse_float(name: str, default: float) -> Tuple[float, bool]:
	"""Return environment variable as float when possible, falling back to default."""
	value = os.getenv(name)
	if value is None or value.strip() == '':
		return default, True
	try:
		return float(value), False
	except ValueError:
		logger.warning('Ignoring invalid float for %s: %s', name, value)
		return default, True


def _parse_int(name: str, default: int) -> Tuple[int, bool]:
	"""Return environment variable as int when possible, falling back to default."""
	value = os.getenv(name)
	if value is None or value.strip() == '':
		return default, True
	try:
		return int(value), False
	except ValueError:
		logger.warning('Ignoring invalid integer for %s: %s', name, value)
		return default, True


def _parse_bool(name: str, default: bool) -> bool:
	value = os.getenv(name)
	if value is None or value.strip() == '':
		return default
	return value.strip().lower() in {'true', '1', 'yes', 'on'}


class Config:
	"""Centralized configuration for the provisioning server and the realtime client."""

	OPENAI_API_KEY: str = os.getenv('OPENAI_API_KEY', '')
	OPENAI_API_BASE: str = (os.getenv('OPENAI_API_BASE') or 'https://api.openai.com/v1').rstrip('/')
	OPENAI_REALTIME_BASE: str = os.getenv('OPENAI_REALTIME_BASE') or 'https://api.openai.com/v1/realtime'
	OPENAI_REALTIME_MODEL: str = os.getenv('OPENAI_REALTIME_MODEL') or 'gpt-4o-realtime-preview-2025-08-28'
	REALTIME_VOICE: str = os.getenv('REALTIME_VOICE') or 'verse'

	JWT_SECRET: str = os.getenv('JWT_SECRET', '')
	_ACCESS_TOKEN_TTL_SECONDS, _ = _parse_int('ACCESS_TOKEN_TTL_SECONDS', 15 * 60)
	ACCESS_TOKEN_TTL_SECONDS: int = _ACCESS_TOKEN_TTL_SECONDS

	DEMO_USER_PASSWORD: str = os.getenv('DEMO_USER_PASSWORD') or 'PatientDemo!123'
	DEMO_USER_PASSWORD_HASH: Optional[str] = os.getenv('DEMO_USER_PASSWORD_HASH') or None

	# Policy flags handed to every provisioned session.
	REQUIRE_ENGLISH_GREETINGS: bool = _parse_bool('REQUIRE_ENGLISH_GREETINGS', True)
	REQUIRE_MANUAL_MIC_ENABLE: bool = _parse_bool('REQUIRE_MANUAL_MIC_ENABLE', True)

	DEFAULT_GREETING_INSTRUCTIONS: str = os.getenv('DEFAULT_GREETING_INSTRUCTIONS') or (
		'You are an English-speaking ophthalmology assistant. Introduce yourself once, confirm consent '
		"for an AI-assisted voice visit, and invite the patient to describe their reason for today's "
		'appointment. Always speak English and do not repeat yourself unless the patient explicitly asks you to.'
	)

	GREETING_SYSTEM_PROMPT: str = (
		'You are the AI ophthalmology voice assistant greeting a patient under supervision of the on-call '
		'ophthalmologist. Keep tone warm, concise, and professional. Respond strictly in English and never '
		'switch languages, even if the patient does. Deliver a single concise greeting, confirm consent for an '
		"AI-assisted voice visit, and invite the patient to share their reason for today's appointment. After "
		'delivering the initial greeting, wait for the patient to respond before speaking again unless they '
		'request clarification or provide new information.'
	)
	GREETING_RESPONSE_INSTRUCTIONS: str = (
		'Deliver the prepared ophthalmology greeting, confirm consent for the voice consult, and invite the '
		'patient to describe their symptoms.'
	)
	ENGLISH_ONLY_CLAUSE: str = 'Respond strictly in English.'

	HOST: str = os.getenv('HOST') or '0.0.0.0'
	_PORT, _ = _parse_int('PORT', 4000)
	PORT: int = _PORT
	ALLOW_ALL_ORIGINS: bool = _parse_bool('ALLOW_ALL_ORIGINS', False)

	API_BASE: str = (os.getenv('API_BASE') or 'http://localhost:4000').rstrip('/')

	MIC_DEVICE: str = os.getenv('MIC_DEVICE') or 'default'
	MIC_FORMAT: Optional[str] = os.getenv('MIC_FORMAT', 'pulse') or None
	AUDIO_OUTPUT: Optional[str] = os.getenv('AUDIO_OUTPUT') or None
	AUDIO_OUTPUT_FORMAT: Optional[str] = os.getenv('AUDIO_OUTPUT_FORMAT') or None

	_CHANNEL_WAIT_TIMEOUT, _ = _parse_float('CHANNEL_WAIT_TIMEOUT', 5.0)
	CHANNEL_WAIT_TIMEOUT: float = _CHANNEL_WAIT_TIMEOUT

	_CHANNEL_POLL_INTERVAL, _ = _parse_float('CHANNEL_POLL_INTERVAL', 0.05)
	CHANNEL_POLL_INTERVAL: float = _CHANNEL_POLL_INTERVAL

	@classmethod
	def validate(cls) -> bool:
		"""Ensure the server has what it needs to issue tokens and provision sessions."""
		if not cls.OPENAI_API_KEY:
			logger.error('Missing OPENAI_API_KEY. Set it in your environment.')
			return False
		if len(cls.JWT_SECRET) < 32:
			logger.error('JWT_SECRET must be at least 32 characters.')
			return False
		return True

	@classmethod
	def validate_client(cls) -> bool:
		"""Validate the settings the console client depends on."""
		if not cls.API_BASE.startswith(('http://', 'https://')):
			logger.error('API_BASE must be an http(s) URL, got %s', cls.API_BASE)
			return False
		if not cls.OPENAI_REALTIME_BASE.startswith(('http://', 'https://')):
			logger.error('OPENAI_REALTIME_BASE must be an http(s) URL, got %s', cls.OPENAI_REALTIME_BASE)
			return False
		return True

	@classmethod
	def greeting_instructions(cls, english_only: bool) -> str:
		"""Return the response instructions used for the scripted greeting."""
		if english_only:
			return f'{cls.GREETING_RESPONSE_INSTRUCTIONS} {cls.ENGLISH_ONLY_CLAUSE}'
		return cls.GREETING_RESPONSE_INSTRUCTIONS

	@classmethod
	def log_config(cls) -> None:
		"""Print non-sensitive settings to stdout."""
		print('Configuration:')
		print(f'  Realtime Model: {cls.OPENAI_REALTIME_MODEL}')
		print(f'  Realtime Base: {cls.OPENAI_REALTIME_BASE}')
		print(f'  OpenAI API Key: {"set" if bool(cls.OPENAI_API_KEY) else "missing"}')
		print(f'  JWT Secret: {"set" if len(cls.JWT_SECRET) >= 32 else "missing or too short"}')
		print(f'  English-only Greetings: {cls.REQUIRE_ENGLISH_GREETINGS}')
		print(f'  Manual Microphone Enable: {cls.REQUIRE_MANUAL_MIC_ENABLE}')
		print(f'  API Base: {cls.API_BASE}')
		print(f'  Microphone: {cls.MIC_DEVICE} ({cls.MIC_FORMAT or "auto"})')
		print(f'  Audio Output: {cls.AUDIO_OUTPUT or "discarded"}')
