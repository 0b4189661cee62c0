"""OpenGL side of the editor: shader assembly, scene uniform buffer, render passes.

Everything here needs a current OpenGL context (created by main.py).
"""

import logging
import os

import numpy as np
from OpenGL.GL import *
from OpenGL.GL.shaders import compileProgram, compileShader

import distance_field
import raymarcher
import scene
import shading
from camera import FOV_ANGLE
from picker import clamp_pixel

log = logging.getLogger(__name__)

SHADER_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "shaders")
SCENE_BINDING = 1  # Uniform buffer binding point of the SceneBlock

VERTEX_SHADER = "vertex_shader.glsl"
SDF_LIBRARY = "sdf_library.glsl"
RAYMARCH_FRAGMENT = "raymarch_fragment.glsl"
ID_PICK_FRAGMENT = "id_pick_fragment.glsl"


class ShaderCompileError(RuntimeError):
    """Shader compilation or program link failed. The message is the full driver log."""


def load_shader_code(file_path):
    """
    Load shader code from a file and return it as a string.

    Relative paths are looked up in the shaders directory.

    Raises:
        FileNotFoundError: If the shader file cannot be found.
    """
    if not os.path.isabs(file_path):
        file_path = os.path.join(SHADER_DIR, file_path)
    try:
        with open(file_path, 'r') as file:
            return file.read()
    except FileNotFoundError:
        raise FileNotFoundError(f"Shader file not found: {file_path}")


def _glsl_float(value):
    return f"{float(value):.6f}"


def _glsl_vec3(values):
    return "vec3({})".format(", ".join(_glsl_float(v) for v in values))


def shader_defines(smooth_policy="accumulator"):
    """#define block that keeps the GLSL constants in step with the Python ones."""
    defines = {
        "MAX_PER_TYPE": str(scene.MAX_PER_TYPE),
        "GROUND_HEIGHT": _glsl_float(scene.GROUND_HEIGHT),
        "MAX_STEPS": str(raymarcher.MAX_STEPS),
        "PICK_MAX_STEPS": str(raymarcher.PICK_MAX_STEPS),
        "SURF_DIST": _glsl_float(raymarcher.SURF_DIST),
        "MAX_DIST": _glsl_float(raymarcher.MAX_DIST),
        "FOV_ANGLE": _glsl_float(FOV_ANGLE),
        "MIN_BLEND_K": _glsl_float(distance_field.MIN_BLEND_K),
        "SMOOTH_PROPAGATE": "1" if smooth_policy == "propagate" else "0",
        "MATERIAL_SLOT_STEP": _glsl_float(distance_field.MATERIAL_SLOT_STEP),
        "NO_HIT_MATERIAL": _glsl_float(distance_field.NO_HIT_MATERIAL),
        "CHECKER_LIGHT": _glsl_vec3(distance_field.CHECKER_LIGHT),
        "CHECKER_DARK": _glsl_vec3(distance_field.CHECKER_DARK),
        "LIGHT_POS": _glsl_vec3(shading.LIGHT_POS),
        "AMBIENT": _glsl_float(shading.AMBIENT),
        "SHADOW_FACTOR": _glsl_float(shading.SHADOW_FACTOR),
        "SPECULAR": _glsl_float(shading.SPECULAR),
        "SHININESS": _glsl_float(shading.SHININESS),
        "SHADOW_BIAS": _glsl_float(shading.SHADOW_BIAS),
        "NORMAL_EPS": _glsl_float(shading.NORMAL_EPS),
        "SKY_TOP": _glsl_vec3(shading.SKY_TOP),
        "SKY_BOTTOM": _glsl_vec3(shading.SKY_BOTTOM),
        "FOG_DENSITY": _glsl_float(shading.FOG_DENSITY),
        "GAMMA": _glsl_float(shading.GAMMA),
        "HIGHLIGHT_COLOR": _glsl_vec3(shading.HIGHLIGHT_COLOR),
        "HIGHLIGHT_MIX": _glsl_float(shading.HIGHLIGHT_MIX),
    }
    for code, name in enumerate(scene.BLEND_MODES):
        defines[f"BLEND_{name.upper()}"] = f"{code}u"
    return "\n".join(f"#define {name} {value}" for name, value in defines.items())


def assemble_fragment(fragment_file, smooth_policy="accumulator"):
    source = load_shader_code(fragment_file)
    source = source.replace("{DEFINES}", shader_defines(smooth_policy))
    return source.replace("{SDF_LIBRARY}", load_shader_code(SDF_LIBRARY))


def build_program(vertex_src, fragment_src):
    """Compile and link a program. Raises ShaderCompileError with the driver's diagnostic."""
    try:
        program = compileProgram(
            compileShader(vertex_src, GL_VERTEX_SHADER),
            compileShader(fragment_src, GL_FRAGMENT_SHADER)
        )
    except RuntimeError as e:
        raise ShaderCompileError(str(e)) from e
    block_index = glGetUniformBlockIndex(program, "SceneBlock")
    if block_index != GL_INVALID_INDEX:
        glUniformBlockBinding(program, block_index, SCENE_BINDING)
    log.info("Built shader program %s", program)
    return program


class SceneUniformBuffer:
    """The packed scene block on the GPU, re-uploaded when the scene version changes."""

    def __init__(self):
        self.ubo = glGenBuffers(1)
        self.version = None
        self.size = scene.SCENE_DTYPE.itemsize
        glBindBuffer(GL_UNIFORM_BUFFER, self.ubo)
        glBufferData(GL_UNIFORM_BUFFER, self.size, None, GL_DYNAMIC_DRAW)
        glBindBuffer(GL_UNIFORM_BUFFER, 0)
        glBindBufferBase(GL_UNIFORM_BUFFER, SCENE_BINDING, self.ubo)

    def update(self, store):
        """Upload the scene if it changed since the last upload. Returns True when it uploaded."""
        if store.version == self.version:
            return False
        data = store.pack()
        glBindBuffer(GL_UNIFORM_BUFFER, self.ubo)
        glBufferSubData(GL_UNIFORM_BUFFER, 0, data.nbytes, data)
        glBindBuffer(GL_UNIFORM_BUFFER, 0)
        glBindBufferBase(GL_UNIFORM_BUFFER, SCENE_BINDING, self.ubo)
        self.version = store.version
        return True

    def delete(self):
        glDeleteBuffers(1, [self.ubo])


class RenderPass:
    """Fullscreen quad drawn with one ray-marching fragment shader."""

    def __init__(self, fragment_file, smooth_policy="accumulator"):
        self.fragment_file = fragment_file
        self.program = build_program(load_shader_code(VERTEX_SHADER), assemble_fragment(fragment_file, smooth_policy))
        self.uniforms = self.get_uniform_locations(self.program)

        vertices = [-1.0, -1.0, 0.0, 1.0, -1.0, 0.0, 1.0, 1.0, 0.0, -1.0, 1.0, 0.0]
        vertices = (GLfloat * len(vertices))(*vertices)
        self.vao = glGenVertexArrays(1)
        glBindVertexArray(self.vao)
        self.vbo = glGenBuffers(1)
        glBindBuffer(GL_ARRAY_BUFFER, self.vbo)
        glBufferData(GL_ARRAY_BUFFER, len(vertices) * 4, vertices, GL_STATIC_DRAW)
        glVertexAttribPointer(0, 3, GL_FLOAT, GL_FALSE, 0, None)
        glEnableVertexAttribArray(0)
        glBindVertexArray(0)

    @staticmethod
    def get_uniform_locations(program):
        return {
            'time': glGetUniformLocation(program, "time"),
            'resolution': glGetUniformLocation(program, "resolution"),
            'viewportOrigin': glGetUniformLocation(program, "viewportOrigin"),
            'camYaw': glGetUniformLocation(program, "camYaw"),
            'camPitch': glGetUniformLocation(program, "camPitch"),
            'radius': glGetUniformLocation(program, "radius"),
            'CamOrbit': glGetUniformLocation(program, "CamOrbit"),
            'selectedTag': glGetUniformLocation(program, "selectedTag"),
        }

    def draw(self, camera, width, height, time_value=0.0, selected=None, origin=(0, 0)):
        """Draw into the currently bound framebuffer and viewport."""
        glUseProgram(self.program)
        u = self.uniforms
        glUniform1f(u['time'], time_value)
        glUniform2f(u['resolution'], width, height)
        glUniform2f(u['viewportOrigin'], *origin)
        glUniform1f(u['camYaw'], camera.yaw)
        glUniform1f(u['camPitch'], camera.pitch)
        glUniform1f(u['radius'], camera.distance)
        glUniform3f(u['CamOrbit'], *[float(v) for v in camera.target])
        if u['selectedTag'] != -1:
            tag = distance_field.encode_material(*selected) if selected else distance_field.NO_HIT_MATERIAL
            glUniform1f(u['selectedTag'], tag)
        glBindVertexArray(self.vao)
        glDrawArrays(GL_TRIANGLE_FAN, 0, 4)
        glBindVertexArray(0)
        glUseProgram(0)

    def delete(self):
        glDeleteVertexArrays(1, [self.vao])
        glDeleteBuffers(1, [self.vbo])
        glDeleteProgram(self.program)


class GpuIdPass:
    """Identifier pass into an offscreen RGBA8 framebuffer the size of the viewport."""

    def __init__(self, smooth_policy="accumulator"):
        self.render_pass = RenderPass(ID_PICK_FRAGMENT, smooth_policy)
        self.fbo = None
        self.texture = None
        self.width = 0
        self.height = 0

    def resize(self, width, height):
        """Create or update the framebuffer. Only recreates on a size change."""
        width, height = max(1, int(width)), max(1, int(height))
        if self.fbo is not None and (width, height) == (self.width, self.height):
            return
        if self.fbo is not None:
            glDeleteFramebuffers(1, [self.fbo])
            glDeleteTextures(1, [self.texture])

        self.fbo = glGenFramebuffers(1)
        glBindFramebuffer(GL_FRAMEBUFFER, self.fbo)
        self.texture = glGenTextures(1)
        glBindTexture(GL_TEXTURE_2D, self.texture)
        glTexImage2D(GL_TEXTURE_2D, 0, GL_RGBA8, width, height, 0, GL_RGBA, GL_UNSIGNED_BYTE, None)
        # Identifiers must never be interpolated
        glTexParameteri(GL_TEXTURE_2D, GL_TEXTURE_MIN_FILTER, GL_NEAREST)
        glTexParameteri(GL_TEXTURE_2D, GL_TEXTURE_MAG_FILTER, GL_NEAREST)
        glFramebufferTexture2D(GL_FRAMEBUFFER, GL_COLOR_ATTACHMENT0, GL_TEXTURE_2D, self.texture, 0)
        status = glCheckFramebufferStatus(GL_FRAMEBUFFER)
        glBindFramebuffer(GL_FRAMEBUFFER, 0)
        glBindTexture(GL_TEXTURE_2D, 0)
        if status != GL_FRAMEBUFFER_COMPLETE:
            raise RuntimeError(f"Identifier framebuffer incomplete (status {status})")
        self.width, self.height = width, height
        log.debug("Identifier framebuffer resized to %dx%d", width, height)

    def render(self, camera, width, height):
        self.resize(width, height)
        viewport = glGetIntegerv(GL_VIEWPORT)
        glBindFramebuffer(GL_FRAMEBUFFER, self.fbo)
        glViewport(0, 0, self.width, self.height)
        glClearColor(0.0, 0.0, 0.0, 1.0)
        glClear(GL_COLOR_BUFFER_BIT)
        self.render_pass.draw(camera, self.width, self.height)
        glBindFramebuffer(GL_FRAMEBUFFER, 0)
        glViewport(*[int(v) for v in viewport])

    def read_pixel(self, x, y):
        """RGBA8 at (x, y) with a top-left origin."""
        x, y = clamp_pixel(x, y, self.width, self.height)
        px = np.zeros((1, 1, 4), dtype=np.uint8)
        glBindFramebuffer(GL_FRAMEBUFFER, self.fbo)
        glPixelStorei(GL_PACK_ALIGNMENT, 1)
        # OpenGL rows start at the bottom
        glReadPixels(x, self.height - 1 - y, 1, 1, GL_RGBA, GL_UNSIGNED_BYTE, px)
        glBindFramebuffer(GL_FRAMEBUFFER, 0)
        return tuple(int(c) for c in px[0, 0])

    def delete(self):
        if self.fbo is not None:
            glDeleteFramebuffers(1, [self.fbo])
            glDeleteTextures(1, [self.texture])
        self.render_pass.delete()
