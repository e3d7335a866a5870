"""
MCQ Extractor
=============
Turns noisy PDF page text into validated multiple-choice questions with
detected answers, ready for human review.

Architecture:
    - Normalizer: canonical text stream (anchors, option markers, artifacts)
    - Strategies: line scan, regex patterns and block split, pooled
    - Segmenter: "Practice Set N" partitioning of multi-test documents
    - Validator: deduplication and the final structural gate
    - Correlator: answer keys, highlights, bold emphasis, manual overrides

Version: 1.0.0
"""

__version__ = "1.0.0"
