"""Domain Service Bridge (dsb).

Host-level daemon that watches the containers running on one docker host,
reads the domains they declare in their labels or environment, and
publishes them to redis with a TTL so reverse proxies can route to them:

 - periodic reconciliation (observe, parse, diff, apply)
 - lease renewal on every cycle, deletion only on confirmed absence
 - systemd READY/WATCHDOG notifications and graceful shutdown

A failed docker query never empties the registry; entries of a stopped
daemon expire through their lease.
"""

__version__ = "0.1.0"
