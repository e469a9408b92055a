from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx
from loguru import logger

from core.config import SongConfig
from core.errors import ConversionJobFailed, ConversionUnavailable
from core.intents import clamp_transpose


@dataclass
class JobStatus:
    status: str
    percent: int = 0
    message: str = ""
    output_path: Optional[str] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status == "failed" or bool(self.error)

    @property
    def completed(self) -> bool:
        return self.status == "completed" and bool(self.output_path)


class VoiceConversionClient:
    """Client for the external voice-conversion job service."""

    def __init__(self, config: SongConfig, base_dir: Path, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.base_dir = base_dir
        self._client = client

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.api_url.rstrip("/"),
                timeout=httpx.Timeout(self.config.request_timeout),
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _dir(self, configured: str, default: str) -> str:
        path = Path(configured) if configured else self.base_dir / default
        path.mkdir(parents=True, exist_ok=True)
        return str(path.resolve())

    def build_payload(self, audio_path: Path, transpose: Optional[int]) -> dict:
        options = self.config.options
        pitch = clamp_transpose(transpose) if transpose is not None else 0
        return {
            "songUrlOrFilePath": str(audio_path),
            "modelData": [{"modelId": self.config.voice_model_id, "weight": 1}],
            "options": {
                "pitch": pitch,
                "preStemmed": False,
                "vocalsOnly": False,
                "sampleMode": False,
                "deEchoDeReverb": options.de_echo_de_reverb,
                "f0Method": options.f0_method,
                "torchCompile": "none",
                "device": options.device,
                "stemmingMethod": options.stemming_method,
                "indexRatio": options.index_ratio,
                "consonantProtection": options.consonant_protection,
                "outputFormat": options.output_format,
                "volumeEnvelope": 1,
                "acceptWebmFormat": True,
            },
            "modelsPath": self._dir(self.config.models_path, "models"),
            "outputDirectory": self._dir(self.config.output_directory, "outputs"),
            "weightsPath": self._dir(self.config.weights_path, "weights"),
        }

    async def is_reachable(self) -> bool:
        client = self._ensure_client()
        try:
            await client.get("/")
            return True
        except httpx.HTTPError as e:
            logger.warning("Voice conversion service is not available: {}", e)
            return False

    async def submit(self, audio_path: Path, transpose: Optional[int] = None) -> str:
        """Create a conversion job and return its id.

        Raises:
            ConversionUnavailable: the service did not answer the reachability probe.
            ConversionJobFailed: the service answered but did not accept the job.
        """
        if not await self.is_reachable():
            raise ConversionUnavailable(f"Conversion service at {self.config.api_url} is not responding")

        payload = self.build_payload(audio_path, transpose)
        logger.info(
            "Submitting conversion job for {} (pitch {})", audio_path.name, payload["options"]["pitch"]
        )
        client = self._ensure_client()
        try:
            response = await client.post("/create_song", json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ConversionJobFailed(f"API Error: {e}") from e

        job_id = data.get("jobId") if isinstance(data, dict) else None
        if not job_id:
            raise ConversionJobFailed("No job ID received from API")
        logger.info("Conversion job created: {}", job_id)
        return str(job_id)

    async def progress(self, job_id: str) -> JobStatus:
        """Query one job. Transport and API errors come back as a failed status."""
        client = self._ensure_client()
        try:
            response = await client.post("/song_progress", json={"jobId": job_id})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Error checking progress of job {}: {}", job_id, e)
            return JobStatus(status="failed", error=str(e))

        if data.get("error"):
            logger.error("Job {} reported an error: {}", job_id, data["error"])
            return JobStatus(status="failed", error=str(data["error"]))

        return JobStatus(
            status=data.get("status", "processing"),
            percent=int(data.get("percent") or 0),
            message=data.get("message") or "",
            output_path=data.get("outputFilepath"),
        )
