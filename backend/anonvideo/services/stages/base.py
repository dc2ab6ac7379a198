"""
Filter graph assembly for the single transcoding pass.

Stages never write media themselves. Each one contributes a fragment to a
FilterGraph and the engine renders the combined graph with one ffmpeg call.
"""

from typing import Callable

# Builds a filter_complex fragment that reads label `src` and writes label `dst`
VideoFragment = Callable[[str, str], str]


class FilterGraph:
    """
    Chained ffmpeg filter_complex description.

    Video fragments are chained through generated labels; the audio
    filter, if any, is applied to the first audio stream.

    Example:
        graph = FilterGraph()
        graph.add_video(lambda src, dst: f"[{src}]hflip[{dst}]")
        graph.set_audio("atempo=1.12")
        args = graph.to_ffmpeg_args()
        # ["-filter_complex", "[0:v]hflip[v1];[0:a]atempo=1.12[aout]",
        #  "-map", "[v1]", "-map", "[aout]"]
    """

    def __init__(self):
        self._fragments: list[str] = []
        self._video_label = "0:v"
        self._audio_filter: str | None = None

    @property
    def has_video_filters(self) -> bool:
        return bool(self._fragments)

    @property
    def audio_filter(self) -> str | None:
        return self._audio_filter

    def add_video(self, fragment: VideoFragment) -> str:
        """
        Append a video fragment after the current output.

        Args:
            fragment: Builder receiving (src, dst) labels

        Returns:
            New output label
        """
        dst = f"v{len(self._fragments) + 1}"
        self._fragments.append(fragment(self._video_label, dst))
        self._video_label = dst
        return dst

    def set_audio(self, audio_filter: str) -> None:
        """Set the comma-separated audio filter chain."""
        self._audio_filter = audio_filter

    def describe(self) -> str:
        """The filter_complex string ("" when nothing is filtered)."""
        parts = list(self._fragments)
        if self._audio_filter:
            parts.append(f"[0:a]{self._audio_filter}[aout]")
        return ";".join(parts)

    def to_ffmpeg_args(self) -> list[str]:
        """ffmpeg arguments for the graph including stream mapping."""
        description = self.describe()
        if not description:
            return ["-map", "0:v", "-map", "0:a?"]

        video_map = f"[{self._video_label}]" if self._fragments else "0:v"
        audio_map = "[aout]" if self._audio_filter else "0:a?"
        return ["-filter_complex", description, "-map", video_map, "-map", audio_map]
