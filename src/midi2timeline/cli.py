from __future__ import annotations
import argparse, logging, pathlib, sys
from . import analyze, write
from .config import load_config
from .util.midi import MidiLoadError

def main(argv=None):
    p = argparse.ArgumentParser(description="MIDI -> music timeline (key, chords, tension, beats)")
    p.add_argument("--in", dest="infile", required=True, help="Input MIDI (.mid/.midi/.rmi)")
    p.add_argument("--sidecar", dest="sidecar", default=None, help="Write a YAML analysis sidecar")
    p.add_argument("--annotated", dest="annotated", default=None,
                   help="Write a conductor MIDI with chord markers")
    p.add_argument("--config", dest="config", default=None, help="YAML config (defaults applied if omitted)")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    args = p.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(levelname)s %(name)s: %(message)s")

    in_path = pathlib.Path(args.infile).expanduser().resolve()
    if not in_path.exists():
        print(f"[cli] ERROR: Input not found: {in_path}", file=sys.stderr)
        sys.exit(1)

    cfg = load_config(args.config)
    print(f"[cli] infile = {in_path}")

    try:
        timeline = analyze.analyze_midi_file(str(in_path), cfg)
    except MidiLoadError as exc:
        print(f"[cli] ERROR: {exc}", file=sys.stderr)
        sys.exit(2)

    if args.sidecar:
        out = pathlib.Path(args.sidecar).expanduser().resolve()
        write.write_sidecar(timeline, str(out))
        print(f"[cli] sidecar   -> {out}")

    if args.annotated:
        out = pathlib.Path(args.annotated).expanduser().resolve()
        write.write_annotated_midi(timeline, str(out))
        print(f"[cli] annotated -> {out}")

    key = write.pitch_name(timeline.key, timeline.use_flats)
    progression = " ".join(c.numeral for c in timeline.chords[:16])
    print(f"[cli] key={key} {timeline.key_mode} tempo={timeline.tempo:.1f} "
          f"meter={timeline.time_signature[0]}/{timeline.time_signature[1]} "
          f"duration={timeline.duration:.1f}s")
    print(f"[cli] chords={len(timeline.chords)} notes={len(timeline.notes)} "
          f"drums={len(timeline.drums)} regions={len(timeline.key_regions)}")
    if progression:
        print(f"[cli] progression: {progression}")

if __name__ == "__main__":
    main()
