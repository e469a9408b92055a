"""Failure taxonomy for the performer.

Collaborator adapters raise these; the response and song pipelines catch
them at their boundary and turn them into a spoken, in-character line.

    MediaNotFound          search returned nothing usable
    DownloadFailed         media could not be fetched as a local audio file
    ConversionUnavailable  conversion service unreachable (direct-play fallback)
    ConversionJobFailed    conversion service rejected or failed the job
    OutputMissing          job reported completion but its output file is absent
    EmptyCompletion        completion stream ended with no text
    StreamError            completion stream raised mid-flight
    SpeechSynthesisFailed  TTS produced nothing or raised
    PersistenceFailed      durable store write/read failed (never fatal after startup)
"""


class PerformerError(Exception):
    """Base class for all performer failures."""


class MediaNotFound(PerformerError):
    pass


class DownloadFailed(PerformerError):
    pass


class ConversionUnavailable(PerformerError):
    pass


class ConversionJobFailed(PerformerError):
    pass


class OutputMissing(PerformerError):
    pass


class EmptyCompletion(PerformerError):
    pass


class StreamError(PerformerError):
    pass


class SpeechSynthesisFailed(PerformerError):
    pass


class PersistenceFailed(PerformerError):
    pass
