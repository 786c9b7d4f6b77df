"""运行时核心：契约、取消、活动流与执行循环。"""
