# State = everything needed to resume, retry, or audit a session after a stop.

# A stored session holds:

# The iteration counter and cap

# Status and the reason the last run stopped

# The pending or answered assistance request

# Tool call records and the results shown to the next iteration

# Loop Guard bookkeeping (duplicate streak, pending warning)

# Raw per-iteration records for diagnostics
