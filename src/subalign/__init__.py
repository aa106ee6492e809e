"""subalign: bilingual subtitle alignment for language learners."""

__version__ = "0.1.0"
