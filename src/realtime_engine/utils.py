import base64
from typing import Union

import numpy as np

from src.realtime_engine.errors import AudioTooShortError, UnsupportedChannelLayout, ValidationError
from src.realtime_engine.models import AUDIO_PCM, DEFAULT_PCM_RATE
from utils.ml_logging import get_logger

logger = get_logger("realtime_engine.utils")

PCM16_DTYPE = np.dtype("<i2")
BYTES_PER_SAMPLE = PCM16_DTYPE.itemsize
MINIMUM_AUDIO_MS = 100

AudioBuffer = Union[bytes, bytearray, np.ndarray]


def float_to_16bit_pcm(float32_array: np.ndarray) -> np.ndarray:
    """
    Converts a numpy array of float32 amplitude data to a numpy array in int16 format.

    Args:
        float32_array (np.ndarray): Input float32 numpy array.

    Returns:
        np.ndarray: Output int16 numpy array.
    """
    int16_array = np.clip(float32_array, -1, 1) * 32767
    return int16_array.astype(np.int16)


def to_pcm16_bytes(audio: AudioBuffer) -> bytes:
    """
    Normalize captured audio to little-endian 16-bit PCM bytes.

    Float arrays are treated as amplitudes in [-1, 1]; integer arrays are cast.
    Multi-dimensional arrays are flattened row by row, so a (frames, channels)
    capture becomes interleaved samples.
    """
    if isinstance(audio, np.ndarray):
        if np.issubdtype(audio.dtype, np.floating):
            audio = float_to_16bit_pcm(audio.astype(np.float32))
        return np.ascontiguousarray(audio, dtype=PCM16_DTYPE).tobytes()
    return bytes(audio)


def array_buffer_to_base64(array_buffer: np.ndarray) -> str:
    """
    Converts a numpy array buffer to a base64 encoded string.

    The samples are first converted to 16-bit PCM.
    """
    return base64.b64encode(to_pcm16_bytes(array_buffer)).decode("utf-8")


def pcm_to_data_uri(pcm: AudioBuffer, media_type: str = AUDIO_PCM) -> str:
    if isinstance(pcm, np.ndarray):
        encoded = array_buffer_to_base64(pcm)
    else:
        encoded = base64.b64encode(bytes(pcm)).decode("ascii")
    return f"data:{media_type};base64,{encoded}"


def _as_samples(pcm: bytes) -> np.ndarray:
    if len(pcm) % BYTES_PER_SAMPLE:
        raise ValidationError(f"PCM16 buffer length must be even, got {len(pcm)} bytes")
    return np.frombuffer(pcm, dtype=PCM16_DTYPE)


def bytes_per_second(sample_rate: int, channels: int = 1) -> int:
    return sample_rate * channels * BYTES_PER_SAMPLE


def audio_duration_ms(pcm: bytes, sample_rate: int = DEFAULT_PCM_RATE, channels: int = 1) -> float:
    return len(pcm) * 1000.0 / bytes_per_second(sample_rate, channels)


def minimum_audio_bytes(sample_rate: int = DEFAULT_PCM_RATE, minimum_ms: int = MINIMUM_AUDIO_MS) -> int:
    return bytes_per_second(sample_rate) * minimum_ms // 1000


def downmix_to_mono(pcm: bytes, channels: int) -> bytes:
    """
    Convert interleaved 16-bit PCM to mono.

    Args:
        pcm (bytes): Interleaved little-endian 16-bit samples.
        channels (int): Channel count of the input. Mono passes through.

    Returns:
        bytes: Mono PCM. Stereo frames are averaged with the result truncated
        toward zero.

    Raises:
        UnsupportedChannelLayout: For any channel count other than one or two.
        ValidationError: If the buffer does not hold whole frames.
    """
    if channels == 1:
        return pcm
    if channels != 2:
        raise UnsupportedChannelLayout(channels)

    samples = _as_samples(pcm)
    if samples.size % 2:
        raise ValidationError("Stereo buffer does not contain a whole number of frames")

    frames = samples.reshape(-1, 2).astype(np.int32)
    # float division then astype truncates toward zero
    mono = ((frames[:, 0] + frames[:, 1]) / 2).astype(PCM16_DTYPE)
    return mono.tobytes()


def resample_linear(pcm: bytes, in_rate: int, out_rate: int) -> bytes:
    """
    Resample mono 16-bit PCM with linear interpolation.

    The output holds floor(n * out_rate / in_rate) samples. Output sample i is
    read at source position i * in_rate / out_rate, blending the two nearest
    input samples by the fractional part; the upper neighbour is clamped to the
    last sample. Equal rates return the input unchanged.
    """
    if in_rate <= 0 or out_rate <= 0:
        raise ValidationError(f"Sample rates must be positive, got {in_rate} -> {out_rate}")
    if in_rate == out_rate:
        return pcm

    samples = _as_samples(pcm)
    n = samples.size
    if n == 0:
        return b""

    out_count = n * out_rate // in_rate
    # positions kept as integers scaled by out_rate
    positions = np.arange(out_count, dtype=np.int64) * in_rate
    idx1 = positions // out_rate
    frac = (positions % out_rate) / out_rate
    idx2 = np.minimum(idx1 + 1, n - 1)

    source = samples.astype(np.float64)
    blended = source[idx1] + (source[idx2] - source[idx1]) * frac
    return blended.astype(PCM16_DTYPE).tobytes()


def ensure_minimum_duration(
    pcm: bytes, sample_rate: int = DEFAULT_PCM_RATE, minimum_ms: int = MINIMUM_AUDIO_MS
) -> bytes:
    """Raise AudioTooShortError when a mono buffer is shorter than `minimum_ms`."""
    if len(pcm) < minimum_audio_bytes(sample_rate, minimum_ms):
        raise AudioTooShortError(audio_duration_ms(pcm, sample_rate), minimum_ms)
    return pcm


def prepare_audio(
    pcm: AudioBuffer, sample_rate: int, channels: int = 1, target_rate: int = DEFAULT_PCM_RATE
) -> bytes:
    """
    Condition captured audio for transmission: downmix, resample and gate.

    Args:
        pcm (bytes or np.ndarray): Interleaved little-endian 16-bit samples, or a
            numpy capture buffer (float amplitudes or integer samples).
        sample_rate (int): Source sample rate in Hz.
        channels (int): Source channel count.
        target_rate (int): Rate expected by the session input format.

    Returns:
        bytes: Mono 16-bit PCM at `target_rate`, at least 100 ms long.
    """
    pcm = to_pcm16_bytes(pcm)
    mono = downmix_to_mono(pcm, channels)
    resampled = resample_linear(mono, sample_rate, target_rate)
    ensure_minimum_duration(resampled, target_rate)
    logger.debug(
        f"Prepared audio: {len(pcm)} bytes @ {sample_rate}Hz/{channels}ch -> "
        f"{len(resampled)} bytes @ {target_rate}Hz mono"
    )
    return resampled
