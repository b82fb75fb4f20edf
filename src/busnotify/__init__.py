"""BusNotify — real-time school-bus notifications.

The live layer of the school transport system: authenticated socket
connections, per-route presence, driver stop updates and admin
notifications with a durable per-student inbox behind them.
"""

__version__ = "0.1.0"
