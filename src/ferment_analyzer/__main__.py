"""
Ferment Analyzer - Entry Point

Run with: python -m ferment_analyzer
"""

from ferment_analyzer.cli import main


if __name__ == "__main__":
    main()
