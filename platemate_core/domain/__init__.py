"""领域层模型与协议。

包含：
- models: ChatMessage / RestaurantRecord / UserPreferences 模型。
- geo: 坐标、定位读数与大圆距离。
- conversation: 对话会话状态与 PersistenceStore 抽象。
- signals: 状态变更通知。
- exceptions: 业务异常类型定义。
"""
