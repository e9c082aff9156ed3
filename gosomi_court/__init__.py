"""
Gosomi Court - Mock Court Backend
=================================

A small service for settling disputes between friends:
1. Filing a case against a friend, collecting evidence and a defense
2. Optional jury voting
3. An AI judge verdict with selectable penalties
4. One appeal per case

The case lifecycle lives in `state_machine`, verdict generation in `verdict`.
"""

__version__ = "1.0.0"
