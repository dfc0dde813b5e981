"""docsync command-line interface"""
