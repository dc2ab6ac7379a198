"""
Voice transformation stage.

Describes a fixed pitch shift as an ffmpeg audio filter chain: the audio
is reinterpreted at a different sample rate (which shifts pitch and
speed), resampled back, then time-stretched to restore the original
duration. No pitch detection or formant preservation is involved.
"""

from anonvideo.models.schemas import VoiceEffect

DEFAULT_SAMPLE_RATE = 44100

# effect -> (sample rate factor, tempo factor)
VOICE_RATIOS: dict[VoiceEffect, tuple[float, float]] = {
    VoiceEffect.DEEP: (0.89, 1.12),
    VoiceEffect.LIGHT: (1.12, 0.89),
}


def build_voice_filter(effect: VoiceEffect, sample_rate: int = DEFAULT_SAMPLE_RATE) -> str:
    """
    Audio filter chain for a voice effect.

    Args:
        effect: deep lowers pitch, light raises it
        sample_rate: Source sample rate in Hz

    Returns:
        Comma-separated filter chain, e.g.
        "asetrate=44100*0.89,aresample=44100,atempo=1.12"
    """
    rate_factor, tempo_factor = VOICE_RATIOS[VoiceEffect(effect)]
    rate = sample_rate if sample_rate > 0 else DEFAULT_SAMPLE_RATE
    return f"asetrate={rate}*{rate_factor},aresample={rate},atempo={tempo_factor}"
