"""Receipt OCR proxy: vision model extraction and receipt normalisation."""
