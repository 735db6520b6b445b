"""
FFmpeg command construction for streaming encodes.

Input order:
- Input 0: composition frames piped on stdin (rawvideo RGBA or PNG stream)
- Inputs 1..N: embedded video files (audio only, their pictures are already
  part of the captured frames)
- Inputs N+1..: separate audio tracks
"""

import logging
from dataclasses import dataclass

from framecast.config import Settings, get_settings
from framecast.schemas.render import AudioTrackConfig, EmbeddedVideoConfig, RenderConfig

logger = logging.getLogger(__name__)

VIDEO_OUTPUT_LABEL = "[v_out]"
AUDIO_OUTPUT_LABEL = "[a_mix_out]"


def _seconds(value: float) -> str:
    return f"{round(value, 6)}"


@dataclass
class FilterGraph:
    """Result of building a filter graph."""

    graph: str
    video_output_label: str = VIDEO_OUTPUT_LABEL
    audio_output_label: str | None = None
    embedded_video_count: int = 0

    @property
    def has_audio(self) -> bool:
        return self.audio_output_label is not None


class FilterGraphBuilder:
    """Builds the -filter_complex graph for a RenderConfig."""

    def build(self, config: RenderConfig, pixel_format: str = "yuv420p") -> FilterGraph:
        fps = config.timeline.fps
        sections = [f"[0:v] fps={fps},format={pixel_format} {VIDEO_OUTPUT_LABEL}"]

        embedded_with_audio = [
            v for v in config.embedded_videos if v.include_audio and v.duration_in_frames > 0
        ]
        has_audio = bool(embedded_with_audio) or bool(config.audio_tracks)
        if has_audio:
            sections.extend(self._build_audio_sections(config))

        logger.debug(
            f"[ENCODE] Filter graph: embeddedVideos={len(config.embedded_videos)}, "
            f"withAudio={len(embedded_with_audio)}, audioTracks={len(config.audio_tracks)}, "
            f"audioOutput={AUDIO_OUTPUT_LABEL if has_audio else 'none'}"
        )

        return FilterGraph(
            graph=";".join(sections),
            audio_output_label=AUDIO_OUTPUT_LABEL if has_audio else None,
            embedded_video_count=len(config.embedded_videos),
        )

    def _build_audio_sections(self, config: RenderConfig) -> list[str]:
        fps = config.timeline.fps
        first_track_input = 1 + len(config.embedded_videos)
        sections: list[str] = []
        outputs: list[str] = []

        for i, video in enumerate(config.embedded_videos):
            if not video.include_audio:
                logger.debug(f"[ENCODE] Skipping audio for video {i} (includeAudio=false)")
                continue
            if video.duration_in_frames <= 0:
                logger.debug(f"[ENCODE] Skipping audio for video {i} (duration={video.duration_in_frames})")
                continue
            output = f"[a_embedded_{i}]"
            sections.append(self._embedded_video_chain(video, fps, f"[{i + 1}:a]", output))
            outputs.append(output)

        for i, track in enumerate(config.audio_tracks):
            output = f"[a_track_{i}]"
            sections.append(self._audio_track_chain(track, fps, f"[{first_track_input + i}:a]", output))
            outputs.append(output)

        if len(outputs) == 1:
            last = sections.pop()
            sections.append(last[: last.rindex("[")] + AUDIO_OUTPUT_LABEL)
        elif len(outputs) > 1:
            sections.append(
                "".join(outputs)
                + f"amix=inputs={len(outputs)}:duration=longest:dropout_transition=0"
                + AUDIO_OUTPUT_LABEL
            )
        return sections

    @staticmethod
    def _embedded_video_chain(video: EmbeddedVideoConfig, fps: int, input_label: str, output_label: str) -> str:
        # The input already carries -ss, so the audio starts at trim_start_seconds
        duration_s = video.duration_in_frames / fps
        filters = [f"atrim=start=0:end={_seconds(duration_s)}", "asetpts=PTS-STARTPTS"]

        if video.audio_fade_in_frames > 0:
            filters.append(f"afade=t=in:st=0:d={_seconds(video.audio_fade_in_frames / fps)}")
        if video.audio_fade_out_frames > 0:
            fade_out_s = video.audio_fade_out_frames / fps
            filters.append(f"afade=t=out:st={_seconds(max(duration_s - fade_out_s, 0))}:d={_seconds(fade_out_s)}")
        if video.audio_volume != 1.0:
            filters.append(f"volume={video.audio_volume}")

        delay_ms = round(video.start_frame / fps * 1000)
        if delay_ms > 0:
            filters.append(f"adelay={delay_ms}|{delay_ms}")

        return input_label + ",".join(filters) + output_label

    @staticmethod
    def _audio_track_chain(track: AudioTrackConfig, fps: int, input_label: str, output_label: str) -> str:
        trim_start_s = track.trim_start_frame / fps
        trim_end_s = track.trim_end_frame / fps if track.trim_end_frame is not None else None
        duration_s = track.duration_in_frames / fps
        filters: list[str] = []

        if trim_start_s > 0 or trim_end_s is not None:
            end_s = trim_start_s + duration_s
            if trim_end_s is not None:
                end_s = min(trim_end_s, end_s)
            filters.append(f"atrim=start={_seconds(trim_start_s)}:end={_seconds(end_s)}")
            filters.append("asetpts=PTS-STARTPTS")

        if track.loop:
            filters.append("aloop=loop=-1:size=0")

        filters.append(f"atrim=start=0:end={_seconds(duration_s)}")
        filters.append("asetpts=PTS-STARTPTS")

        if track.fade_in_frames > 0:
            filters.append(f"afade=t=in:st=0:d={_seconds(track.fade_in_frames / fps)}")
        if track.fade_out_frames > 0:
            fade_out_s = track.fade_out_frames / fps
            filters.append(f"afade=t=out:st={_seconds(max(duration_s - fade_out_s, 0))}:d={_seconds(fade_out_s)}")
        if track.volume != 1.0:
            filters.append(f"volume={track.volume}")

        delay_ms = round(track.start_frame / fps * 1000)
        if delay_ms > 0:
            filters.append(f"adelay={delay_ms}|{delay_ms}")

        return input_label + ",".join(filters) + output_label


def build_encoder_command(
    config: RenderConfig,
    output_path: str,
    ffmpeg_path: str | None = None,
    settings: Settings | None = None,
    filter_builder: FilterGraphBuilder | None = None,
) -> list[str]:
    """
    Build the full FFmpeg argument list for a streaming encode.

    Args:
        config: Resolved render config
        output_path: Output media file
        ffmpeg_path: Executable, defaults to Settings.ffmpeg_path
        settings: Settings override
        filter_builder: Filter graph builder override

    Returns:
        Command list suitable for asyncio.create_subprocess_exec
    """
    settings = settings or get_settings()
    timeline = config.timeline
    encoding = config.encoding
    pixel_format = "yuv444p" if encoding.is_lossless else settings.pixel_format
    graph = (filter_builder or FilterGraphBuilder()).build(config, pixel_format)

    cmd = [ffmpeg_path or settings.ffmpeg_path, "-y", "-hide_banner"]

    if encoding.frame_format == "png":
        cmd.extend(["-f", "image2pipe", "-framerate", str(timeline.fps), "-c:v", "png", "-i", "-"])
    else:
        cmd.extend([
            "-f", "rawvideo",
            "-pixel_format", "rgba",
            "-video_size", f"{timeline.width}x{timeline.height}",
            "-framerate", str(timeline.fps),
            "-i", "-",
        ])

    for video in config.embedded_videos:
        if video.trim_start_seconds > 0:
            cmd.extend(["-ss", _seconds(video.trim_start_seconds)])
        cmd.extend(["-i", video.video_path])

    for track in config.audio_tracks:
        cmd.extend(["-i", track.source.uri])

    cmd.extend(["-filter_complex", graph.graph, "-map", graph.video_output_label])
    if graph.audio_output_label:
        cmd.extend(["-map", graph.audio_output_label])

    cmd.extend([
        "-c:v", settings.video_codec,
        "-preset", encoding.preset,
        "-crf", str(encoding.crf),
        "-pix_fmt", pixel_format,
    ])
    if settings.encoder_threads > 0:
        cmd.extend(["-threads", str(settings.encoder_threads)])

    if graph.has_audio:
        cmd.extend(["-c:a", settings.audio_codec, "-b:a", settings.audio_bitrate])

    cmd.append(output_path)
    return cmd
