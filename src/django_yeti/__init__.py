# flake8: noqa F401
from django_yeti.build import BundleBuilder, BundleWriteError
from django_yeti.bundle import AssetType, BundleDescriptor, BundleImportError
from django_yeti.compilers import TransformError, TransformOutput, Transformer
from django_yeti.components import Head, PageContext, render_component, render_page_component
from django_yeti.render_result import RenderResult, merge_render_results
from django_yeti.templates import css, html, js
import django_yeti.types as types
