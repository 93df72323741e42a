"""
netcheck - 端点网络诊断工具

对一个域名/URL执行 DNS → 连接计时/路由追踪/稳定性 的分阶段诊断，
输出健康分、问题列表和修复建议
"""

__version__ = "1.0.0"
