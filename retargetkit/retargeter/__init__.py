"""
Quaternion retargeting of animation clips between skeletons.
"""

from .engine import RetargetingContext, RetargetingEngine, RetargetOptions
from .manager import RetargetManager

__all__ = ['RetargetingContext', 'RetargetingEngine', 'RetargetOptions', 'RetargetManager']
