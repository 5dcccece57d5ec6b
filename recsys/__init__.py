"""学术社区内容推荐服务（多路打分 + 权重实验）。"""
