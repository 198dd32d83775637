#!/usr/bin/env python3
"""
GST Document Engine - Entry Point

Generates GST invoices and shipping labels for e-commerce orders,
one at a time or in bulk.

Usage:
    python main.py split --seller MH --buyer DL --item "Shirt:2:500"
    python main.py jurisdictions --lookup Karnataka
    python main.py bulk --file orders.json --kind invoice --export-csv batch.csv
    python main.py bulk --file orders.json --kind label --workers 8
    python main.py import --file customers.csv --allow-duplicates
"""

from gst_engine.cli import main

if __name__ == "__main__":
    main()
