"""
Sensor simulation for exercising the fusion core without live feeds
"""

from .sensor_simulator import SensorSimulator, SimulatedShip

__all__ = ['SensorSimulator', 'SimulatedShip']
