"""
Sploit - scheduled Metasploit console automation with new-finding alerts.
"""

__version__ = "0.3.0"
