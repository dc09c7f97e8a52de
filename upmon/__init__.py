"""Keep an UptimeRobot monitor in sync with this site's health."""
