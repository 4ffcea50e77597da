#!/usr/bin/env python3
"""
Brine Disassembler - disassemble a pickle file and optionally decode it safely.

Shows each decoded instruction with its byte offset and an annotation.  With
--run, the stream is also executed with every symbolic call left inert, and
the decoded root value is printed.

Usage:
    python brine_disassemble.py <file.pkl>
    python brine_disassemble.py <file.pkl> --output disasm.txt
    python brine_disassemble.py <file.pkl> --run --config limits.yaml
"""

import argparse
import logging
from pathlib import Path
import sys

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from brine import Brine, BrineConfig, BrineDisassembler, BrineError, format_listing


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Disassemble a pickle stream with annotations",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('file', help='Pickle file to disassemble')
    parser.add_argument('--output', '-o', help='Output file (default: stdout)')
    parser.add_argument('--run', '-r', action='store_true',
                       help='Also decode the stream and print the root value')
    parser.add_argument('--config', '-c', help='YAML file with interpreter limits')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    source_path = Path(args.file)
    if not source_path.exists():
        print(f"Error: File not found: {args.file}", file=sys.stderr)
        return 1

    instructions = BrineDisassembler().disassemble_file(str(source_path))
    output_lines = [f"Instructions: {len(instructions)}", format_listing(instructions)]

    if args.run:
        try:
            config = BrineConfig.load_from_file(args.config) if args.config else BrineConfig()
            root = Brine(config).load(str(source_path))

        except (BrineError, OSError) as e:
            print(f"Error decoding: {e}", file=sys.stderr)
            return 1

        output_lines.append("")
        output_lines.append("Root value:")
        output_lines.append(root.describe() if root is not None else "(empty stack)")

    output_text = '\n'.join(output_lines)

    if args.output:
        output_path = Path(args.output)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(output_text)

        print(f"Disassembly written to: {output_path}", file=sys.stderr)

    else:
        print(output_text)

    return 0


if __name__ == '__main__':
    sys.exit(main())
