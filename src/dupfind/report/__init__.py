"""Report module for duplicate detection results.

This package contains:
- duplicate_report: DuplicateReport and DuplicateGroup, the ordered view of duplicate buckets
- writer: Opening the output sink and writing the text report
"""
