from dashscope_chat.api import DashScopeApi as DashScopeApi
from dashscope_chat.chat import DashScopeChat as DashScopeChat
from dashscope_chat.metadata import ChatResponse as ChatResponse
from dashscope_chat.metadata import Generation as Generation
from dashscope_chat.models import ChatMessage as ChatMessage
from dashscope_chat.models import DashScopeModelVersion as DashScopeModelVersion
from dashscope_chat.models import Media as Media
from dashscope_chat.models import Role as Role
from dashscope_chat.options import DashScopeChatOptions as DashScopeChatOptions
from dashscope_chat.streaming import StreamState as StreamState
