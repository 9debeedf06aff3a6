"""
简历处理流水线

转写 -> 字段提取 -> AI 增强，每个阶段独立失败、独立重试。
组装入口见 factory.build_pipeline。
"""
