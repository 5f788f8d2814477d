from typing import Dict, Optional, Union
from pathlib import Path
import json
from jinja2 import Template, Environment, BaseLoader, StrictUndefined
from jinja2.exceptions import TemplateError
from src.config.settings import settings
from ..logger.logger import logger
from ..utils.common import safe_file_read

class PromptTemplate:
    """Prompt模板管理

    模板保存在 ``<template_dir>/templates.json``，键为模板名，值为 jinja2 模板字符串。
    """

    def __init__(self, template_dir: Optional[Union[str, Path]] = None):
        """初始化Prompt模板管理器"""
        self.template_dir = Path(template_dir or settings.BASE_DIR / "resources" / "prompts")
        self.templates: Dict[str, str] = {}
        self.env = Environment(loader=BaseLoader(), undefined=StrictUndefined, trim_blocks=True, lstrip_blocks=True)
        self._load_templates()

    def _load_templates(self) -> None:
        """加载模板文件"""
        content = safe_file_read(self.template_dir / "templates.json")
        if not content:
            logger.warning(f"未找到模板文件: {self.template_dir / 'templates.json'}")
            return
        try:
            self.templates = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error(f"加载模板文件失败: {str(e)}")

    def get_template(self, name: str) -> Optional[Template]:
        """获取指定名称的模板"""
        template_str = self.templates.get(name)
        return self.env.from_string(template_str) if template_str else None

    def render(self, template_name: str, **kwargs) -> Optional[str]:
        """渲染指定模板，模板不存在或渲染失败返回None"""
        template = self.get_template(template_name)
        if template is None:
            logger.error(f"模板不存在: {template_name}")
            return None
        try:
            return template.render(**kwargs)
        except TemplateError as e:
            logger.error(f"渲染模板失败: {str(e)}")
            return None

    def add_template(self, name: str, template: str) -> None:
        """添加或覆盖模板(仅内存)"""
        self.templates[name] = template
