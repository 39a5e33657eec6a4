"""GroupGuard：VRChat 群组管理控制台的认证与会话服务。"""
