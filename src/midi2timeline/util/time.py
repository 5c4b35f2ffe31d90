from __future__ import annotations

def beats_to_ticks(beats: float, tpb: int) -> int:
    if tpb <= 0:
        tpb = 480
    return int(round(beats * tpb))

def bpm_to_micro(bpm: float) -> int:
    return int(round(60_000_000 / max(1e-6, float(bpm))))
