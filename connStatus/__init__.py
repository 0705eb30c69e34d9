"""
connStatus - minimal unprivileged ICMP echo client
"""
