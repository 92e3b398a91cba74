"""Serial transport: port lifetime, open retries and line exchange."""

from .serial_connection import PySerialPort, SerialPort, SerialSession, SerialSettings
