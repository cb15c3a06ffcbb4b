import sys

from yt_dlp.version import __version__ as ytdlp_version

from media.ffmpeg import ffmpeg_available


def get_runtime_info(app_version="0.0.0", ffmpeg_bin="ffmpeg", ffprobe_bin="ffprobe"):
    return {
        "app_version": app_version,
        "python_version": sys.version.split()[0],
        "yt_dlp_version": ytdlp_version,
        "ffmpeg_available": ffmpeg_available(ffmpeg_bin),
        "ffprobe_available": ffmpeg_available(ffprobe_bin),
    }
