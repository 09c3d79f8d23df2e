"""TimerGPT - countdown timers as tool calls."""
__version__ = "0.1.0"
