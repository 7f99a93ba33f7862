"""A small x86-64 hobby kernel modelled in Python: formatting, VGA terminal, paging, boot memory, heap, interrupts and a page-table generator."""

__version__ = "0.1.0"
__all__ = ["formatting", "terminal", "paging", "memory", "heap", "interrupts", "pagegen"]