"""
Swarm member model (simulated and real agents)
"""
