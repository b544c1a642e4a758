"""
Tests for the Audio Conditioning Pipeline
=========================================

Covers channel downmix, linear resampling, the minimum-duration gate and the
combined `prepare_audio` path used before audio is sent to the service.
"""

import base64
import struct

import numpy as np
import pytest

from src.realtime_engine.errors import AudioTooShortError, UnsupportedChannelLayout, ValidationError
from src.realtime_engine.utils import (
    array_buffer_to_base64,
    audio_duration_ms,
    downmix_to_mono,
    ensure_minimum_duration,
    float_to_16bit_pcm,
    minimum_audio_bytes,
    pcm_to_data_uri,
    prepare_audio,
    resample_linear,
    to_pcm16_bytes,
)


def pcm(*samples: int) -> bytes:
    return struct.pack(f"<{len(samples)}h", *samples)


def unpack(data: bytes) -> list:
    return list(struct.unpack(f"<{len(data) // 2}h", data))


class TestDownmix:
    """Test stereo to mono conversion."""

    def test_mono_passes_through(self):
        data = pcm(1, 2, 3)
        assert downmix_to_mono(data, 1) is data

    @pytest.mark.parametrize("channels", [0, -1, 3])
    def test_invalid_channel_counts_rejected(self, channels):
        with pytest.raises(UnsupportedChannelLayout):
            downmix_to_mono(pcm(5, 6, 7, 8, 9, 10), channels)

    def test_stereo_averages_each_frame(self):
        mono = downmix_to_mono(pcm(100, 200, -100, -300, 32767, 32767), 2)
        assert unpack(mono) == [150, -200, 32767]

    def test_stereo_average_truncates_toward_zero(self):
        mono = downmix_to_mono(pcm(1, 2, -1, -2, 0, -1), 2)
        assert unpack(mono) == [1, -1, 0]

    def test_extreme_values_do_not_overflow(self):
        mono = downmix_to_mono(pcm(-32768, -32768, 32767, -32768), 2)
        assert unpack(mono) == [-32768, 0]

    def test_output_has_one_sample_per_frame(self):
        frames = 480
        stereo = np.arange(frames * 2, dtype="<i2").tobytes()
        assert len(downmix_to_mono(stereo, 2)) == frames * 2

    def test_more_than_two_channels_rejected(self):
        with pytest.raises(UnsupportedChannelLayout) as exc_info:
            downmix_to_mono(pcm(1, 2, 3, 4, 5, 6), 3)
        assert exc_info.value.channels == 3

    def test_partial_stereo_frame_rejected(self):
        with pytest.raises(ValidationError):
            downmix_to_mono(pcm(1, 2, 3), 2)


class TestResample:
    """Test linear interpolation resampling."""

    def test_identity_returns_same_bytes(self):
        data = pcm(1, 2, 3, 4)
        assert resample_linear(data, 16000, 16000) is data

    @pytest.mark.parametrize(
        "n, in_rate, out_rate",
        [(160, 16000, 24000), (441, 44100, 24000), (480, 48000, 24000), (7, 8000, 24000), (3, 24000, 8000)],
    )
    def test_output_length(self, n, in_rate, out_rate):
        data = np.zeros(n, dtype="<i2").tobytes()
        out = resample_linear(data, in_rate, out_rate)
        assert len(out) // 2 == n * out_rate // in_rate

    def test_upsample_interpolates_between_samples(self):
        # 2x upsample: positions 0, 0.5, 1, 1.5
        out = unpack(resample_linear(pcm(0, 100), 8000, 16000))
        assert out == [0, 50, 100, 100]

    def test_downsample_picks_source_positions(self):
        out = unpack(resample_linear(pcm(0, 10, 20, 30, 40, 50), 48000, 24000))
        assert out == [0, 20, 40]

    def test_empty_buffer(self):
        assert resample_linear(b"", 16000, 24000) == b""

    def test_invalid_rates_rejected(self):
        with pytest.raises(ValidationError):
            resample_linear(pcm(1), 0, 24000)
        with pytest.raises(ValidationError):
            resample_linear(pcm(1), 16000, -1)

    def test_odd_byte_count_rejected(self):
        with pytest.raises(ValidationError):
            resample_linear(b"\x00\x01\x02", 16000, 24000)


class TestMinimumDuration:
    """Test the 100 ms gate."""

    def test_minimum_is_4800_bytes_at_24khz(self):
        assert minimum_audio_bytes(24000) == 4800

    def test_exactly_minimum_accepted(self):
        data = bytes(4800)
        assert ensure_minimum_duration(data, 24000) is data

    def test_short_buffer_rejected_with_duration(self):
        with pytest.raises(AudioTooShortError) as exc_info:
            ensure_minimum_duration(bytes(4798), 24000)
        assert str(exc_info.value) == "Audio too short (100ms). Need 100ms+."
        assert exc_info.value.duration_ms == pytest.approx(99.9583, rel=1e-3)

    def test_short_buffer_message(self):
        with pytest.raises(AudioTooShortError, match=r"Audio too short \(50ms\)\. Need 100ms\+\."):
            ensure_minimum_duration(bytes(2400), 24000)

    def test_audio_duration(self):
        assert audio_duration_ms(bytes(48000), 24000) == 1000.0
        assert audio_duration_ms(bytes(3200), 16000) == 100.0


class TestPrepareAudio:
    """Test the combined conditioning pipeline."""

    def test_stereo_44k_to_mono_24k(self):
        frames = 4410  # 100 ms at 44.1 kHz
        stereo = np.ones(frames * 2, dtype="<i2").tobytes()
        out = prepare_audio(stereo, 44100, 2)
        assert len(out) == (frames * 24000 // 44100) * 2
        assert set(unpack(out)) == {1}

    def test_float_stereo_capture_accepted(self):
        frames = 2400  # 100 ms at 24 kHz
        capture = np.full((frames, 2), 0.5, dtype=np.float32)
        out = prepare_audio(capture, 24000, 2)
        assert len(out) == frames * 2
        assert set(unpack(out)) == {16383}

    def test_too_short_after_resampling_rejected(self):
        mono_16k = bytes(3198)  # 1599 samples -> 2398 samples at 24 kHz
        with pytest.raises(AudioTooShortError):
            prepare_audio(mono_16k, 16000, 1)

    def test_unsupported_layout_rejected_before_resampling(self):
        with pytest.raises(UnsupportedChannelLayout):
            prepare_audio(bytes(9600), 24000, 4)


class TestEncodingHelpers:
    """Test base64 and numpy helpers."""

    def test_float_to_16bit_pcm_clips(self):
        out = float_to_16bit_pcm(np.array([-2.0, 0.0, 0.5, 2.0], dtype=np.float32))
        assert out.dtype == np.int16
        assert list(out) == [-32767, 0, 16383, 32767]

    def test_int_array_encoded_as_is(self):
        samples = np.array([1, -1, 300], dtype=np.int16)
        assert base64.b64decode(array_buffer_to_base64(samples)) == samples.tobytes()

    def test_float_array_converted_before_encoding(self):
        encoded = array_buffer_to_base64(np.array([1.0], dtype=np.float32))
        assert base64.b64decode(encoded) == pcm(32767)

    def test_pcm_to_data_uri(self):
        assert pcm_to_data_uri(b"\x01\x00") == "data:audio/pcm;base64,AQA="

    def test_pcm_to_data_uri_from_float_array(self):
        uri = pcm_to_data_uri(np.array([0.0, 1.0], dtype=np.float32))
        assert uri == "data:audio/pcm;base64," + base64.b64encode(pcm(0, 32767)).decode("ascii")

    def test_to_pcm16_bytes_normalizes_captures(self):
        assert to_pcm16_bytes(b"\x01\x00") == b"\x01\x00"
        assert to_pcm16_bytes(np.array([-1.0, 0.5], dtype=np.float64)) == pcm(-32767, 16383)
        assert to_pcm16_bytes(np.array([[1, 2], [3, 4]], dtype=np.int32)) == pcm(1, 2, 3, 4)
