"""
服务层模块
"""
