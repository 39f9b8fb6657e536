"""
Swarm coordination server - state registry, allocation and simulation clock
"""
