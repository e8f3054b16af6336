"""
Multi-camera USB recorder - Python Implementation
Orchestrates simultaneous FFmpeg capture from several USB cameras and a USB microphone.
"""

__version__ = "1.0.0"
__author__ = "Multicam Recorder Project"
__license__ = "MIT"
