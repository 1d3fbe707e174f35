#!/usr/bin/env python3
"""Generate a synthetic season of episodes for introfinder integration testing.

Every episode has the same layout, but only the intro audio is shared:
  0-30s   shared intro: seeded noise (seed 7) + blue
  30-90s  episode body: noise seeded per episode + green
  90-120s credits: noise seeded per episode + black
"""

import subprocess
import sys
from pathlib import Path

INTRO_SECONDS = 30
BODY_SECONDS = 60
CREDITS_SECONDS = 30


def generate_episode(output: Path, seed: int) -> None:
    output.parent.mkdir(parents=True, exist_ok=True)

    audio_filter = (
        f"anoisesrc=d={INTRO_SECONDS}:c=pink:seed=7:a=0.5[a0];"
        f"anoisesrc=d={BODY_SECONDS}:c=pink:seed={seed}:a=0.5[a1];"
        f"anoisesrc=d={CREDITS_SECONDS}:c=pink:seed={seed + 1000}:a=0.5[a2];"
        "[a0][a1][a2]concat=n=3:v=0:a=1[aout]"
    )

    video_filter = (
        f"color=c=blue:s=320x240:d={INTRO_SECONDS}:r=25[v0];"
        f"color=c=green:s=320x240:d={BODY_SECONDS}:r=25[v1];"
        f"color=c=black:s=320x240:d={CREDITS_SECONDS}:r=25[v2];"
        "[v0][v1][v2]concat=n=3:v=1:a=0[vout]"
    )

    filter_complex = audio_filter + ";" + video_filter

    cmd = [
        "ffmpeg", "-y",
        "-loglevel", "error",
        "-filter_complex", filter_complex,
        "-map", "[vout]",
        "-map", "[aout]",
        "-c:v", "libx264",
        "-c:a", "aac",
        "-shortest",
        str(output),
    ]
    subprocess.run(cmd, check=True)


def generate_test_season(output_dir: Path, episodes: int = 3) -> list[Path]:
    paths = []
    for number in range(1, episodes + 1):
        path = output_dir / f"episode{number:02d}.mp4"
        generate_episode(path, seed=100 + number)
        print(f"Generated: {path}")
        paths.append(path)
    return paths


if __name__ == "__main__":
    out = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("tests/fixtures/season")
    generate_test_season(out)
