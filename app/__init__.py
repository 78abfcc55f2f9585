"""Chat3D notification API.

Regular package so that ``app`` never resolves to an unrelated namespace
package installed in the environment.
"""
