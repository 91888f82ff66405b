"""
IAV Monitor - Certificate lifecycle monitoring

Issues time-limited income certificates (IAV) to persons whose five-year
income is low enough, re-validates them against monthly income reports
using a strike ("stick") rule, revokes them when the rule is broken, and
notifies the postal service and tax agency with at-least-once delivery.

Fun fact: a certificate lives six years, but three well-paid months are
enough to end it.
"""

from iav_monitor.monitor import IAVMonitor, ScanProgress

__version__ = "0.1.0"
__all__ = ["IAVMonitor", "ScanProgress", "__version__"]
