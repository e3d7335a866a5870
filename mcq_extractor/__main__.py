"""
Module entry point for: python -m mcq_extractor

Allows running the extractor directly as a module:
    python -m mcq_extractor extract <pdf_path> [options]
    python -m mcq_extractor text <text_path> [options]
    python -m mcq_extractor info <pdf_path>
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
