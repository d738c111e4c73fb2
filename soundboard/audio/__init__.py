"""Audio handling for uploads.

  - ffmpeg: duration probing (ffprobe) and Ogg/Opus transcoding (ffmpeg)
  - validator: sound name rules, content sniffing, size/format/duration gates
"""
