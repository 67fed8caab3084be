"""Simple example: produce an envelope and key file, then consume them locally."""
import asyncio
from pathlib import Path

from gated_media import producer
from gated_media.client.consumer import EnvelopeConsumer, FileRenderer
from gated_media.client.key_source import FileKeySource
from gated_media.utils import media_io


class LocalEnvelopeStore:
	"""Serves envelope files from a directory as if it were the content network."""

	def __init__(self, root: Path):
		self.root = root

	async def fetch_content(self, cid):
		return media_io.read_bytes(str(self.root / cid)), "application/octet-stream"


def demo():
	src = Path(__file__).parent.parent / "sample_media" / "example.txt"
	src.parent.mkdir(parents=True, exist_ok=True)
	src.write_text("This is an example media file (text).")

	envelope_path = src.parent / "encryptedVideo.bin"
	keyfile = src.parent / "encryptionKey.json"
	producer.produce_file(str(src), str(envelope_path), str(keyfile))

	consumer = EnvelopeConsumer(LocalEnvelopeStore(src.parent), FileKeySource(str(keyfile)), content_type="text/plain")
	decrypted = src.with_suffix(".dec")
	ok, message = asyncio.run(consumer.play(envelope_path.name, FileRenderer(str(decrypted))))

	print("Roundtrip ok:", ok and decrypted.read_text() == src.read_text(), "message:", message)


if __name__ == "__main__":
	demo()
